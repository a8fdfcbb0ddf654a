"""Control plane PKI secrets for a VirtualCluster root namespace."""

import base64
import logging
from dataclasses import dataclass, field

import yaml

from vcmanager.constants import (
    ADMIN_SECRET_NAME,
    APISERVER_CA_SECRET_NAME,
    APISERVER_PORT,
    CONTROLLER_MANAGER_SECRET_NAME,
    DEFAULT_CLUSTER_DOMAIN,
    ETCD_CA_SECRET_NAME,
    PKI_SECRET_NAMES,
    ROOT_CA_SECRET_NAME,
    SERVICE_ACCOUNT_SECRET_NAME,
    SERVICE_NAMES,
    APISERVER,
    ETCD,
)
from vcmanager.errors import PKIError, TransientError
from vcmanager.services.ca_issuer import (
    ROLE_CA,
    ROLE_CLIENT,
    ROLE_KEYPAIR,
    ROLE_SERVER,
)
from vcmanager.services.template_resolver import owner_labels

logger = logging.getLogger(__name__)

TLS_CERT_KEY = "tls.crt"
TLS_KEY_KEY = "tls.key"
SA_PRIVATE_KEY = "service-account.key"
SA_PUBLIC_KEY = "service-account.pub"


@dataclass
class PKIResult:
    all_present: bool
    created: list = field(default_factory=list)
    missing: list = field(default_factory=list)


def _encode(data):
    return {k: base64.b64encode(v.encode()).decode() for k, v in data.items()}


def read_secret_value(secret, key):
    """Return a decoded value from a secret read back from the API."""
    encoded = (secret.get("data") or {}).get(key)
    if encoded is not None:
        return base64.b64decode(encoded).decode()
    return (secret.get("stringData") or {}).get(key)


def apiserver_sans(namespace, cluster_domain):
    svc = SERVICE_NAMES[APISERVER]
    return [
        svc,
        f"{svc}.{namespace}",
        f"{svc}.{namespace}.svc",
        f"{svc}.{namespace}.svc.{cluster_domain}",
        "kubernetes",
        "kubernetes.default",
        "kubernetes.default.svc",
        f"kubernetes.default.svc.{cluster_domain}",
        "localhost",
        "127.0.0.1",
    ]


def etcd_sans(namespace, cluster_domain):
    svc = SERVICE_NAMES[ETCD]
    return [
        svc,
        f"{svc}.{namespace}",
        f"{svc}.{namespace}.svc",
        f"{svc}.{namespace}.svc.{cluster_domain}",
        f"*.{svc}",
        f"*.{svc}.{namespace}.svc",
        f"*.{svc}.{namespace}.svc.{cluster_domain}",
        "localhost",
        "127.0.0.1",
    ]


def render_kubeconfig(server, ca_pem, cert_pem, key_pem, user, cluster_name):
    """Kubeconfig with embedded client credentials."""
    b64 = lambda s: base64.b64encode(s.encode()).decode()  # noqa: E731
    kubeconfig = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": cluster_name,
                "cluster": {"server": server, "certificate-authority-data": b64(ca_pem)},
            }
        ],
        "users": [
            {
                "name": user,
                "user": {
                    "client-certificate-data": b64(cert_pem),
                    "client-key-data": b64(key_pem),
                },
            }
        ],
        "contexts": [
            {"name": f"{user}@{cluster_name}", "context": {"cluster": cluster_name, "user": user}}
        ],
        "current-context": f"{user}@{cluster_name}",
    }
    return yaml.safe_dump(kubeconfig, default_flow_style=False)


class PKIMaterializer:
    """Ensures the six PKI secrets exist; never regenerates an existing one."""

    def __init__(self, host, issuer):
        self.host = host
        self.issuer = issuer

    def ensure(self, vc, namespace):
        """Create whichever PKI secrets are missing from ``namespace``.

        Returns:
            PKIResult with ``all_present`` True only when every secret exists
        """
        existing = {
            name: self.host.get("Secret", namespace, name) for name in PKI_SECRET_NAMES
        }
        missing = [name for name, secret in existing.items() if secret is None]
        if not missing:
            return PKIResult(all_present=True)

        logger.info(f"Issuing PKI secrets {missing} in {namespace}")
        spec = vc.get("spec") or {}
        expire_days = spec.get("pkiExpireDays")
        domain = spec.get("clusterDomain") or DEFAULT_CLUSTER_DOMAIN
        labels = owner_labels(vc)

        root_ca = None
        if existing[ROOT_CA_SECRET_NAME] is not None:
            root_ca = self._load_root_ca(existing[ROOT_CA_SECRET_NAME])
        elif len(missing) < len(PKI_SECRET_NAMES):
            logger.warning(
                f"Root CA missing in {namespace} while other PKI secrets exist; "
                "issuing a new root CA for the missing secrets only"
            )

        result = PKIResult(all_present=False)
        for name in missing:
            if name == ROOT_CA_SECRET_NAME:
                bundle = self.issuer.issue_certificate_bundle(
                    "kubernetes", ROLE_CA, expire_days=expire_days
                )
                data = {TLS_CERT_KEY: bundle.cert_pem, TLS_KEY_KEY: bundle.key_pem}
                root_ca = (bundle.cert_pem, bundle.key_pem)
            else:
                if root_ca is None and name != SERVICE_ACCOUNT_SECRET_NAME:
                    result.missing.append(name)
                    continue
                data = self._issue(name, namespace, domain, root_ca, expire_days)

            if self._create_secret(namespace, name, data, labels):
                result.created.append(name)
            elif name == ROOT_CA_SECRET_NAME:
                # Another pass created it first; sign the rest with its material
                current = self.host.get("Secret", namespace, name)
                if current is None:
                    result.missing.append(name)
                    root_ca = None
                else:
                    root_ca = self._load_root_ca(current)

        result.all_present = not result.missing
        return result

    def _load_root_ca(self, secret):
        cert_pem = read_secret_value(secret, TLS_CERT_KEY)
        key_pem = read_secret_value(secret, TLS_KEY_KEY)
        if not cert_pem or not key_pem:
            raise PKIError(f"Secret {ROOT_CA_SECRET_NAME} has no CA material")
        return cert_pem, key_pem

    def _issue(self, name, namespace, domain, root_ca, expire_days):
        server = f"https://{SERVICE_NAMES[APISERVER]}.{namespace}:{APISERVER_PORT}"

        if name == APISERVER_CA_SECRET_NAME:
            bundle = self.issuer.issue_certificate_bundle(
                "kube-apiserver", ROLE_SERVER, ca=root_ca,
                sans=apiserver_sans(namespace, domain), expire_days=expire_days,
            )
            return {TLS_CERT_KEY: bundle.cert_pem, TLS_KEY_KEY: bundle.key_pem}

        if name == ETCD_CA_SECRET_NAME:
            bundle = self.issuer.issue_certificate_bundle(
                "etcd", ROLE_SERVER, ca=root_ca,
                sans=etcd_sans(namespace, domain), expire_days=expire_days,
            )
            return {TLS_CERT_KEY: bundle.cert_pem, TLS_KEY_KEY: bundle.key_pem}

        if name == CONTROLLER_MANAGER_SECRET_NAME:
            user = "system:kube-controller-manager"
            bundle = self.issuer.issue_certificate_bundle(
                user, ROLE_CLIENT, ca=root_ca, expire_days=expire_days
            )
            return {
                name: render_kubeconfig(
                    server, root_ca[0], bundle.cert_pem, bundle.key_pem, user, namespace
                )
            }

        if name == ADMIN_SECRET_NAME:
            bundle = self.issuer.issue_certificate_bundle(
                "admin", ROLE_CLIENT, ca=root_ca,
                organizations=("system:masters",), expire_days=expire_days,
            )
            return {
                name: render_kubeconfig(
                    server, root_ca[0], bundle.cert_pem, bundle.key_pem, "admin", namespace
                )
            }

        if name == SERVICE_ACCOUNT_SECRET_NAME:
            bundle = self.issuer.issue_certificate_bundle("service-account", ROLE_KEYPAIR)
            return {SA_PRIVATE_KEY: bundle.key_pem, SA_PUBLIC_KEY: bundle.public_key_pem}

        raise PKIError(f"Unknown PKI secret {name}")

    def _create_secret(self, namespace, name, data, labels):
        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {"name": name, "namespace": namespace, "labels": labels},
            "data": _encode(data),
        }
        try:
            self.host.create("Secret", body)
        except TransientError as e:
            if e.status == 409:
                logger.info(f"Secret {namespace}/{name} appeared concurrently, keeping it")
                return False
            raise
        return True
