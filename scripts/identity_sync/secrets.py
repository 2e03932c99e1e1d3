"""Bearer token lookup for an explicitly configured cluster API host.

``KUBE_API_TOKEN`` is either the token itself or a reference into a cloud
secret store:

    aws-secret://<secret-id>[#<json-field>]
    gcp-secret://<secret>                      (latest version in GCP_PROJECT_ID)
    gcp-secret://projects/<p>/secrets/<s>/versions/<v>
"""

from __future__ import annotations

import json
import logging
import os

from scripts.identity_sync.errors import ValidationError

logger = logging.getLogger("identity_sync.secrets")


def _from_aws(ref: str) -> str:
    import boto3

    secret_id, _, field = ref.partition("#")
    client = boto3.client("secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1"))
    logger.info("Reading API token from AWS secret %s", secret_id)
    secret = client.get_secret_value(SecretId=secret_id)["SecretString"]
    if not field:
        return secret
    try:
        return str(json.loads(secret)[field])
    except (ValueError, KeyError) as exc:
        raise ValidationError(f"AWS secret {secret_id} has no JSON field {field!r}") from exc


def _from_gcp(ref: str) -> str:
    from google.cloud import secretmanager

    if not ref.startswith("projects/"):
        project = os.environ.get("GCP_PROJECT_ID", "")
        if not project:
            raise ValidationError(
                f"gcp-secret://{ref} needs GCP_PROJECT_ID or a full projects/... path"
            )
        ref = f"projects/{project}/secrets/{ref}/versions/latest"

    logger.info("Reading API token from GCP secret %s", ref)
    client = secretmanager.SecretManagerServiceClient()
    return client.access_secret_version(request={"name": ref}).payload.data.decode("utf-8")


_BACKENDS = {
    "aws-secret://": _from_aws,
    "gcp-secret://": _from_gcp,
}


def resolve_secret(value: str) -> str:
    """Return the API token named by ``value``; plain values pass through."""
    for scheme, fetch in _BACKENDS.items():
        if value.startswith(scheme):
            # tokens stored as files in a secret store often end in a newline
            return fetch(value[len(scheme):]).strip()
    return value
