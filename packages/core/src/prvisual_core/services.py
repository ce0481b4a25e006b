"""Factories that turn a config dict into collaborators and an engine.

Everything a workflow talks to is built here, per run, from configuration.
The hosted webhook server and the local `prvisual run` command differ only
in which publisher factory and billing backend they pass in; both end up in
the same WorkflowEngine and PRVisualPipeline.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from prvisual_core.artifacts import BaseArtifactStore, FileSystemArtifactStore, MemoryArtifactStore
from prvisual_core.billing import BaseBilling, PolarBilling, StaticBilling
from prvisual_core.gh.pull_request import CommentPublisher, GitHubApp, get_pull, get_repo
from prvisual_core.pipeline import Collaborators, PRVisualPipeline
from prvisual_core.providers.base import BaseGenerator, CompositeGenerator
from prvisual_core.workflow import DEFAULT_LEASE_SECONDS, WorkflowEngine

if TYPE_CHECKING:
    from prvisual_core.events import InboundEvent
    from prvisual_store.base import BaseStore

logger = logging.getLogger(__name__)

PublisherFactory = Callable[["InboundEvent"], CommentPublisher]

_IMAGE_PROVIDERS = ("gemini", "openai")


def _make_provider(name: str, config: dict) -> BaseGenerator:
    timeout = float(config.get("call_timeout", 90))
    if name == "gemini":
        from prvisual_core.providers.gemini import GeminiGenerator

        return GeminiGenerator(api_key=config["gemini_api_key"], timeout=timeout)
    if name == "openai":
        from prvisual_core.providers.openai import OpenAIGenerator

        return OpenAIGenerator(api_key=config["openai_api_key"], timeout=timeout)
    if name == "anthropic":
        from prvisual_core.providers.anthropic import AnthropicGenerator

        return AnthropicGenerator(api_key=config["anthropic_api_key"], timeout=timeout)
    if name == "command":
        from prvisual_core.providers.command import CommandGenerator

        return CommandGenerator(command=config["brief_command"], timeout=timeout)
    raise ValueError(f"Unknown provider: {name!r}. Choose 'gemini', 'openai', 'anthropic' or 'command'.")


def get_generator(config: dict) -> BaseGenerator:
    brief, image = config["brief_provider"], config["image_provider"]
    if image not in _IMAGE_PROVIDERS:
        raise ValueError(f"Provider {image!r} cannot generate images. Choose 'gemini' or 'openai'.")
    if brief == image:
        return _make_provider(brief, config)
    return CompositeGenerator(_make_provider(brief, config), _make_provider(image, config))


def build_billing(config: dict) -> BaseBilling:
    if config.get("billing", "polar") == "static":
        return StaticBilling()
    return PolarBilling(
        api_key=config["polar_api_key"],
        product_ids=config.get("polar_product_ids") or [],
        timeout=float(config.get("call_timeout", 90)),
    )


def build_artifact_store(config: dict) -> BaseArtifactStore:
    if config.get("artifact_store", "filesystem") == "memory":
        return MemoryArtifactStore()
    return FileSystemArtifactStore(root=config["artifact_dir"], base_url=config["artifact_base_url"])


def build_store(config: dict) -> BaseStore:
    """Instantiate the configured workflow store.

      store: sqlite → SQLiteStore (store_path, default .prvisual.db)
      store: memory → MemoryStore (nothing survives the process)
    """
    if config.get("store", "sqlite") == "memory":
        from prvisual_store.memory import MemoryStore

        return MemoryStore()

    from prvisual_store.sqlite import SQLiteStore

    return SQLiteStore(db_path=config.get("store_path", ".prvisual.db"))


def app_publisher_factory(config: dict) -> PublisherFactory:
    """Publisher per run, authenticated as the GitHub App installation."""
    app = GitHubApp(config["github_app_id"], config["github_private_key"], timeout=int(config.get("call_timeout", 90)))

    def factory(event: InboundEvent) -> CommentPublisher:
        return app.publisher(event.account_id, event.repository, event.number)

    return factory


def token_publisher_factory(config: dict) -> PublisherFactory:
    """Publisher per run, authenticated with a personal token (local runs)."""
    token = config["github_token"]
    timeout = int(config.get("call_timeout", 90))

    def factory(event: InboundEvent) -> CommentPublisher:
        return CommentPublisher(get_pull(get_repo(event.repository, token=token, timeout=timeout), event.number))

    return factory


def build_pipeline_factory(
    config: dict,
    store: BaseStore,
    publisher_factory: PublisherFactory,
    billing_factory: Callable[[], BaseBilling] | None = None,
    artifacts: BaseArtifactStore | None = None,
    generator_factory: Callable[[], BaseGenerator] | None = None,
) -> Callable[[InboundEvent], PRVisualPipeline]:
    artifact_store = artifacts or build_artifact_store(config)

    def factory(event: InboundEvent) -> PRVisualPipeline:
        collaborators = Collaborators(
            billing=billing_factory() if billing_factory else build_billing(config),
            generator=generator_factory() if generator_factory else get_generator(config),
            artifacts=artifact_store,
            publisher=lambda: publisher_factory(event),
            history=store,
            max_context_bytes=int(config.get("max_context_bytes", 50_000)),
            skip_suffixes=tuple(config.get("skip_suffixes") or ()),
            cost_cents=float(config.get("usage_cost_cents", 13.9)),
        )
        return PRVisualPipeline(collaborators)

    return factory


def build_engine(
    config: dict,
    store: BaseStore,
    pipeline_factory: Callable[[InboundEvent], PRVisualPipeline],
) -> WorkflowEngine:
    return WorkflowEngine(
        store=store,
        pipeline_factory=pipeline_factory,
        max_attempts=int(config.get("max_attempts", 3)),
        base_delay=float(config.get("base_delay", 2.0)),
        lease_seconds=float(config.get("lease_seconds", DEFAULT_LEASE_SECONDS)),
    )
