"""Multi-tenant SaaS backend core: tenant scoping and reliable event delivery."""

__version__ = "0.1.0"
