from depsentinel.engines.registry_resolver.clients import default_clients
from depsentinel.engines.registry_resolver.host_rules import HostRuleSet
from depsentinel.engines.registry_resolver.http import RegistryHttpClient
from depsentinel.engines.registry_resolver.resolver import (
    RegistryResolver,
    ResolutionFailure,
    ResolutionReport,
    cache_key,
)

__all__ = [
    "HostRuleSet",
    "RegistryHttpClient",
    "RegistryResolver",
    "ResolutionFailure",
    "ResolutionReport",
    "cache_key",
    "default_clients",
]
