"""
Alfresco repository service.

Writes site memberships, role group memberships, records management marking
constraints and user profiles through Alfresco's REST web scripts.
"""

import logging
from typing import Any, Iterable, Optional, Set
from urllib.parse import quote

import requests

from errors import ConflictError, ConnectivityError, DataIntegrityError, SyncError
from models import ProfileFields, SiteRole


logger = logging.getLogger(__name__)


def _q(value: str) -> str:
    return quote(value, safe="")


class AlfrescoRepository:
    """
    Repository service backed by Alfresco.
    Reads always hit the server; in dry run mode writes are only logged.
    """

    page_size = 100

    def __init__(self, base_url: str, username: str, password: str,
                 timeout: float = 60.0,
                 profile_path: str = "/service/api/people/{username}",
                 dry_run: bool = False,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.profile_path = profile_path
        self.dry_run = dry_run
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.headers.update({"Accept": "application/json"})

    @classmethod
    def from_settings(cls, settings) -> "AlfrescoRepository":
        return cls(
            base_url=settings.alfresco_url,
            username=settings.alfresco_username,
            password=settings.alfresco_password,
            timeout=settings.alfresco_timeout,
            profile_path=settings.alfresco_profile_path,
            dry_run=settings.dry_run,
        )

    def close(self):
        self.session.close()
        logger.debug("Alfresco session closed")

    def _request(self, method: str, path: str, missing_ok: bool = False, **kwargs) -> Optional[requests.Response]:
        """
        Send a request and translate failures into the sync's error taxonomy.
        With missing_ok a 404 is not an error and None is returned.
        """
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ConnectivityError(f"Cannot reach Alfresco at {url}: {e}") from e
        except requests.RequestException as e:
            raise SyncError(f"Request to {url} failed: {e}") from e

        status = response.status_code
        if status < 400:
            return response
        if status == 404 and missing_ok:
            return None

        message = f"{method} {url} returned {status}: {response.text[:200]}"
        if status >= 500:
            raise ConnectivityError(message)
        if status == 409:
            raise ConflictError(message)
        if status in (400, 404, 422):
            raise DataIntegrityError(message)
        raise ConflictError(message)

    def _json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise DataIntegrityError(f"Alfresco returned invalid JSON from {response.url}") from e

    # -- sites ------------------------------------------------------------------

    def list_group_members(self, site: str) -> Set[str]:
        """Usernames of the people who are members of a site."""
        response = self._request("GET", f"/service/api/sites/{_q(site)}/memberships")
        body = self._json(response)
        if not isinstance(body, list):
            raise DataIntegrityError(f"Expected a list of memberships for site {site}, got {type(body).__name__}")

        members = set()
        for membership in body:
            if not isinstance(membership, dict):
                raise DataIntegrityError(f"Malformed membership entry for site {site}: {membership!r}")
            authority = membership.get("authority") or {}
            if not isinstance(authority, dict):
                raise DataIntegrityError(f"Malformed membership authority for site {site}: {authority!r}")
            if authority.get("authorityType", "USER") != "USER":
                continue
            username = authority.get("userName")
            if username:
                members.add(username)
        logger.debug(f"Loaded {len(members)} members of site {site}")
        return members

    def add_member(self, site: str, username: str, role: SiteRole):
        """Add a user to a site, or update the role of an existing member."""
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add: {username} to site {site} as {role.value}")
            return

        self._request(
            "POST",
            f"/service/api/sites/{_q(site)}/memberships",
            json={"role": role.value, "person": {"userName": username}},
        )
        logger.info(f"Added {username} to site {site} as {role.value}")

    def remove_member(self, site: str, username: str, missing_ok: bool = False):
        if self.dry_run:
            logger.info(f"[DRY RUN] Would remove: {username} from site {site}")
            return

        response = self._request(
            "DELETE",
            f"/service/api/sites/{_q(site)}/memberships/{_q(username)}",
            missing_ok=missing_ok,
        )
        if response is None:
            logger.debug(f"{username} was not a member of site {site}")
        else:
            logger.info(f"Removed {username} from site {site}")

    # -- security markings ----------------------------------------------------------

    def set_marking_group(self, constraint: str, group: str, members: Iterable[str]):
        """Replace the authorities allowed to use one value of a marking constraint."""
        authorities = sorted(members)
        if self.dry_run:
            logger.info(f"[DRY RUN] Would set: {constraint}/{group} to {authorities}")
            return

        self._request(
            "POST",
            f"/service/api/rma/admin/rmconstraints/{_q(constraint)}/values",
            json={"values": [{"value": group, "authorities": authorities}]},
        )
        logger.info(f"Set security group {constraint}/{group} to {len(authorities)} authorities")

    # -- role groups ---------------------------------------------------------------

    def list_role_members(self, role: str) -> Set[str]:
        """Usernames of the users directly in an Alfresco group."""
        members = set()
        skip = 0

        # Paginate through the group's children
        while True:
            response = self._request(
                "GET",
                f"/service/api/groups/{_q(role)}/children",
                params={"authorityType": "USER", "maxItems": self.page_size, "skipCount": skip},
            )
            body = self._json(response)
            if not isinstance(body, dict) or not isinstance(body.get("data", []), list):
                raise DataIntegrityError(f"Expected a page of children for group {role}, got {body!r:.200}")
            page = body.get("data", [])
            for child in page:
                if not isinstance(child, dict):
                    raise DataIntegrityError(f"Malformed child entry for group {role}: {child!r}")
                username = child.get("shortName")
                if username:
                    members.add(username)

            paging = body.get("paging") or {}
            total = paging.get("totalItems", 0) if isinstance(paging, dict) else None
            if not isinstance(total, int):
                raise DataIntegrityError(f"Malformed paging for group {role}: {paging!r}")
            skip += len(page)
            if not page or skip >= total:
                break
            logger.debug(f"Fetching next page of {role} members (loaded {len(members)} so far)")

        return members

    def add_role_member(self, role: str, username: str):
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add: {username} to group {role}")
            return

        self._request("POST", f"/service/api/groups/{_q(role)}/children/{_q(username)}")
        logger.info(f"Added {username} to group {role}")

    def remove_role_member(self, role: str, username: str, missing_ok: bool = False):
        if self.dry_run:
            logger.info(f"[DRY RUN] Would remove: {username} from group {role}")
            return

        response = self._request(
            "DELETE",
            f"/service/api/groups/{_q(role)}/children/{_q(username)}",
            missing_ok=missing_ok,
        )
        if response is None:
            logger.debug(f"{username} was not in group {role}")
        else:
            logger.info(f"Removed {username} from group {role}")

    # -- profiles ------------------------------------------------------------------

    def update_user_profile(self, username: str, fields: ProfileFields):
        if self.dry_run:
            logger.info(f"[DRY RUN] Would update profile of {username}: {sorted(fields)}")
            return

        path = self.profile_path.format(username=_q(username))
        self._request("PUT", path, json=fields)
        logger.info(f"Updated profile of {username}")
