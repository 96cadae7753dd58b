from dataclasses import dataclass


@dataclass
class AppConfig:
    name: str
    secret_key: str


@dataclass
class AuditConfig:
    enabled: bool = True
    # Raise on modifications that serialize identically instead of logging them.
    strict: bool = False
    # Modules whose classes are runtime proxies of mapped models.
    proxy_modules: tuple = ()
