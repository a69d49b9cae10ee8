"""EC2 instance metadata client.

Host identity is recomputed on every run; nothing here caches.
"""

import logging

import httpx

from cihost.config import MetadataConfig

logger = logging.getLogger(__name__)

TOKEN_PATH = "/latest/api/token"
PUBLIC_IPV4_PATH = "/latest/meta-data/public-ipv4"


class InstanceMetadataClient:
    """Reads host attributes from the link-local metadata endpoint.

    Tries IMDSv2 (session token) first and falls back to a plain GET,
    which is what hosts with IMDSv1 still enabled answer.
    """

    def __init__(self, config: MetadataConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.endpoint,
            timeout=self._config.timeout,
            transport=self._transport,
        )

    async def _token(self, client: httpx.AsyncClient) -> str | None:
        try:
            resp = await client.put(
                TOKEN_PATH,
                headers={"X-aws-ec2-metadata-token-ttl-seconds": str(self._config.token_ttl)},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug("IMDSv2 token unavailable, using IMDSv1: %s", e)
            return None
        return resp.text.strip()

    async def public_ipv4(self) -> str:
        """Return the instance's public IPv4 address.

        Raises:
            httpx.HTTPError: metadata endpoint unreachable or address unassigned
            ValueError: empty response body
        """
        async with self._client() as client:
            token = await self._token(client)
            headers = {"X-aws-ec2-metadata-token": token} if token else {}
            resp = await client.get(PUBLIC_IPV4_PATH, headers=headers)
            resp.raise_for_status()
            address = resp.text.strip()
        if not address:
            raise ValueError("Instance metadata returned an empty public-ipv4")
        return address
