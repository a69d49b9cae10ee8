"""Identity Reconciler: point restored Jenkins at the current host.

Jenkins records its own root URL on first setup. A restored instance
would keep advertising the previous host's address, so every redirect
and agent connection goes to a dead endpoint.
"""

import logging
import os
import re

import httpx

from cihost.bootstrap.state import BootstrapState
from cihost.config import BootstrapConfig
from cihost.infra.metadata import InstanceMetadataClient
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)

JENKINS_URL_PATTERN = re.compile(r"<jenkinsUrl>.*?</jenkinsUrl>", re.DOTALL)


def rewrite_jenkins_url(document: str, url: str) -> tuple[str, bool]:
    """Replace the first <jenkinsUrl> element's text.

    Returns:
        (new document, whether an element was found)
    """
    new, count = JENKINS_URL_PATTERN.subn(f"<jenkinsUrl>{url}</jenkinsUrl>", document, count=1)
    return new, count > 0


class IdentityReconciler:
    def __init__(self, config: BootstrapConfig, metadata: InstanceMetadataClient) -> None:
        self._workload = config.workload
        self._metadata = metadata

    async def reconcile(self, state: BootstrapState) -> str | None:
        """Rewrite the recorded endpoint if state was restored.

        Returns:
            The URL written, or None if nothing was rewritten
        """
        if not state.restore_occurred:
            return None

        config_file = self._workload.state_dir / self._workload.location_config_file
        if not config_file.is_file():
            logger.info(
                "No %s in restored state", config_file.name,
                extra={"event": LogEvent.IDENTITY_SKIPPED},
            )
            return None

        try:
            address = await self._metadata.public_ipv4()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Could not resolve public address, leaving %s unchanged: %s",
                config_file.name,
                e,
                extra={"event": LogEvent.IDENTITY_SKIPPED, "error": str(e)},
            )
            return None

        url = f"http://{address}:{self._workload.http_port}/"
        document, found = rewrite_jenkins_url(config_file.read_text(encoding="utf-8"), url)
        if not found:
            logger.info(
                "No <jenkinsUrl> element in %s", config_file.name,
                extra={"event": LogEvent.IDENTITY_SKIPPED},
            )
            return None

        config_file.write_text(document, encoding="utf-8")
        os.chown(config_file, self._workload.uid, self._workload.gid)
        logger.info(
            "Jenkins URL set to %s",
            url,
            extra={"event": LogEvent.IDENTITY_RECONCILED, "url": url},
        )
        return url
