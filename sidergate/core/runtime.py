"""App-scoped object graph: config, stores, clients, engine and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass

from sidergate.adapters.anthropic_api.client import AnthropicApiClient
from sidergate.adapters.sider.client import SiderClient
from sidergate.adapters.sider.conversation import SiderConversationClient
from sidergate.config.backends import BackendConfig, load_backend_config
from sidergate.core.orchestrator import Orchestrator
from sidergate.routing.engine import RouterEngine
from sidergate.storage import SessionStores, create_stores


@dataclass(slots=True)
class GatewayRuntime:
    config: BackendConfig
    stores: SessionStores
    engine: RouterEngine
    orchestrator: Orchestrator
    anthropic_client: AnthropicApiClient | None = None


def build_runtime(config: BackendConfig | None = None) -> GatewayRuntime:
    config = config or load_backend_config()
    stores = create_stores()
    engine = RouterEngine(config, stores.affinity)
    sider_client = SiderClient(config.sider, stores.sider_sessions) if config.sider.enabled else None
    history_client = SiderConversationClient(config.sider) if config.sider.enabled else None
    anthropic_client = AnthropicApiClient(config.anthropic) if config.anthropic.enabled else None
    orchestrator = Orchestrator(
        config=config,
        engine=engine,
        sider_client=sider_client,
        anthropic_client=anthropic_client,
        session_store=stores.sider_sessions,
        history_client=history_client,
        conversation_store=stores.conversations,
    )
    return GatewayRuntime(
        config=config,
        stores=stores,
        engine=engine,
        orchestrator=orchestrator,
        anthropic_client=anthropic_client,
    )
