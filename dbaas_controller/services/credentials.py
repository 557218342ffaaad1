"""
Per-cluster credential generation and secret provisioning.
"""
import secrets
import string
from typing import Dict, Optional

from dbaas_controller.config.logging import get_logger
from dbaas_controller.exceptions import KubectlNotFoundError
from dbaas_controller.services.kube_client import KubeClient

logger = get_logger(__name__)

PASSWORD_LENGTH = 24
# PSMDB does not accept every special character in passwords
PASSWORD_ALPHABET = string.ascii_letters + string.digits

PXC_SECRET_KEYS = (
    "root",
    "xtrabackup",
    "monitor",
    "clustercheck",
    "proxyadmin",
    "operator",
    "replication",
)
PXC_ADMIN_PASSWORD_KEY = "root"

PSMDB_USERS = {
    "MONGODB_BACKUP_USER": "backup",
    "MONGODB_CLUSTER_ADMIN_USER": "clusterAdmin",
    "MONGODB_CLUSTER_MONITOR_USER": "clusterMonitor",
    "MONGODB_USER_ADMIN_USER": "userAdmin",
}
PSMDB_PASSWORD_KEYS = (
    "MONGODB_BACKUP_PASSWORD",
    "MONGODB_CLUSTER_ADMIN_PASSWORD",
    "MONGODB_CLUSTER_MONITOR_PASSWORD",
    "MONGODB_USER_ADMIN_PASSWORD",
)
PSMDB_ADMIN_USER_KEY = "MONGODB_USER_ADMIN_USER"
PSMDB_ADMIN_PASSWORD_KEY = "MONGODB_USER_ADMIN_PASSWORD"


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_pxc_passwords() -> Dict[str, str]:
    """Passwords for every system user of the XtraDB operator."""
    return {key: generate_password() for key in PXC_SECRET_KEYS}


def generate_psmdb_passwords() -> Dict[str, str]:
    """Fixed user names plus generated passwords for the PSMDB operator."""
    data = dict(PSMDB_USERS)
    data.update({key: generate_password() for key in PSMDB_PASSWORD_KEYS})
    return data


async def build_secret_data(
    client: KubeClient,
    template_secret_name: Optional[str],
    admin_password_key: str,
    generated: Dict[str, str],
) -> Dict[str, str]:
    """
    Secret contents for a new cluster.

    When a template secret is configured and exists, its data is cloned and
    only the admin password is replaced with a fresh one. Otherwise the
    fully generated set is used.
    """
    if not template_secret_name:
        return dict(generated)

    try:
        template = await client.get_secret(template_secret_name)
    except KubectlNotFoundError:
        logger.warning("template_secret_not_found", secret=template_secret_name)
        return dict(generated)

    data = dict(template)
    data[admin_password_key] = generate_password()
    return data


async def delete_secrets_best_effort(client: KubeClient, cluster_name: str, secret_names) -> None:
    """
    Delete cluster secrets, logging failures.

    The custom resource deletion already started the teardown, so a secret
    that cannot be removed must not fail the delete request.
    """
    for secret_name in secret_names:
        try:
            await client.delete_secret(secret_name)
        except KubectlNotFoundError:
            logger.debug("secret_already_deleted", cluster=cluster_name, secret=secret_name)
        except Exception as e:
            logger.error("cannot_delete_secret", cluster=cluster_name, secret=secret_name, error=str(e))
