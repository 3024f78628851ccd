"""Trust anchor and TLS policy for a transparent TLS-interception proxy.

- Root CA bootstrap: load, key-pair check, leaf parse, fail-fast startup
- Two hardened TLS profiles (upstream client / downstream server)
- Operator-supplied CA bundles via config file or environment
- Custom CA generation for operators replacing the bundled CA
"""

from .bootstrap import BootstrapState, TrustBootstrap, TrustContext, initialize, read_ca_material
from .ca import (
    LeafCertificate,
    RootCAMaterial,
    bundled_ca_pem,
    generate_root_ca,
    load_root_ca,
    parse_leaf,
    write_root_ca,
)
from .config import TrustConfig, load_config
from .errors import BootstrapError, CertificateParseError, FailureReason, TrustMaterialError
from .policy import (
    DOWNSTREAM_SERVER_PROFILE,
    HARDENED_CIPHER_SUITES,
    HARDENED_POLICY,
    POLICY_MINIMUM_VERSION,
    PROFILES,
    UPSTREAM_CLIENT_PROFILE,
    CipherPolicy,
    CipherSuite,
    PeerVerification,
    PolicyRole,
    TLSPolicyProfile,
    build_ssl_context,
    get_profile,
)

__all__ = [
    "DOWNSTREAM_SERVER_PROFILE",
    "HARDENED_CIPHER_SUITES",
    "HARDENED_POLICY",
    "POLICY_MINIMUM_VERSION",
    "PROFILES",
    "UPSTREAM_CLIENT_PROFILE",
    "BootstrapError",
    "BootstrapState",
    "CertificateParseError",
    "CipherPolicy",
    "CipherSuite",
    "FailureReason",
    "LeafCertificate",
    "PeerVerification",
    "PolicyRole",
    "RootCAMaterial",
    "TLSPolicyProfile",
    "TrustBootstrap",
    "TrustConfig",
    "TrustContext",
    "TrustMaterialError",
    "build_ssl_context",
    "bundled_ca_pem",
    "generate_root_ca",
    "get_profile",
    "initialize",
    "load_config",
    "load_root_ca",
    "parse_leaf",
    "read_ca_material",
    "write_root_ca",
]
