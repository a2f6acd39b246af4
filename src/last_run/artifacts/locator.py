"""
Artifact locator.

Finds the most recent non-expired artifact with a given name by paging
through the remote listing.
"""

import logging

from last_run.retry import RetryPolicy, attempt_with_retry

from .models import ArtifactClient, ArtifactHandle

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 10


class ArtifactLocator:
    """
    Locate the latest stored artifact for a name.

    Listing is paged (server-side name filter plus a client-side check)
    and capped at ``max_pages`` pages so a misbehaving or very large
    listing cannot loop forever.
    """

    def __init__(
        self,
        client: ArtifactClient,
        *,
        token: str | None,
        policy: RetryPolicy | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        """
        Initialize the locator.

        Args:
            client: Remote artifact store client
            token: Access token; without it nothing is listed
            policy: Retry policy for each page request
            page_size: Items requested per page
            max_pages: Safety cap on pages fetched
        """
        self._client = client
        self._token = token
        self._policy = policy or RetryPolicy()
        self._page_size = page_size
        self._max_pages = max_pages

    async def list_by_name(self, artifact_name: str) -> list[ArtifactHandle] | None:
        """
        List every artifact called ``artifact_name``.

        Returns:
            Matching handles, or None when listing failed after all retries
        """
        matches: list[ArtifactHandle] = []
        seen = 0

        for page in range(1, self._max_pages + 1):
            outcome = await attempt_with_retry(
                lambda: self._client.list_artifacts(
                    artifact_name, page=page, per_page=self._page_size
                ),
                self._policy,
                label=f"list_artifacts page {page}",
            )
            if not outcome.ok:
                logger.warning(
                    "Failed to list repository artifacts after retries: %s", outcome.error
                )
                return None

            result = outcome.value
            seen += len(result.artifacts)
            matches.extend(a for a in result.artifacts if a.name == artifact_name)

            if len(result.artifacts) < self._page_size:
                break
            if result.total_count is not None and seen >= result.total_count:
                break
        else:
            logger.debug("list_by_name: stopped after %d pages", self._max_pages)

        logger.debug("list_by_name: %d artifact(s) named '%s'", len(matches), artifact_name)
        return matches

    async def locate_latest(self, artifact_name: str) -> ArtifactHandle | None:
        """
        Return the newest non-expired artifact, or None.

        Ordering uses the ``created_at`` string, which is always a
        zero-padded ISO-8601 Z timestamp and therefore sorts
        chronologically. Identical timestamps resolve to the highest id.
        """
        if not self._token:
            logger.debug("locate_latest: no access token, skipping artifact listing")
            return None

        handles = await self.list_by_name(artifact_name)
        if not handles:
            return None

        live = [h for h in handles if not h.expired]
        if not live:
            logger.debug("locate_latest: all %d artifact(s) expired", len(handles))
            return None

        latest = max(live, key=lambda h: (h.created_at, h.id))
        logger.debug("locate_latest: selected id=%s created_at=%s", latest.id, latest.created_at)
        return latest
