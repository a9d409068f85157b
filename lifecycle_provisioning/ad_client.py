"""Active Directory client based on ldap3."""
from __future__ import annotations

import contextlib
import copy
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml
from ldap3 import ALL, BASE, MODIFY_REPLACE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from .config import LDAPConfig
from .errors import ConflictError, DirectoryError, IdentityCreationError, MembershipError
from .interfaces import DirectoryClient
from .models import Identity

logger = logging.getLogger(__name__)

NORMAL_ACCOUNT = 512
ACCOUNTDISABLE = 0x2
NEVER_EXPIRES = 9223372036854775807
_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)

USER_ATTRIBUTES = [
    "sAMAccountName",
    "userPrincipalName",
    "mail",
    "displayName",
    "userAccountControl",
    "memberOf",
    "homeDirectory",
    "accountExpires",
    "description",
    "department",
    "title",
]


def to_filetime(day: date) -> int:
    """Convert a calendar date (midnight UTC) to an AD ``accountExpires`` value."""

    moment = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    delta = moment - _FILETIME_EPOCH
    return (delta.days * 86400 + delta.seconds) * 10_000_000


def _parse_expiration(raw: Any) -> Optional[date]:
    if raw in (None, "", 0, "0", NEVER_EXPIRES, str(NEVER_EXPIRES)):
        return None
    if isinstance(raw, datetime):
        if raw.year >= 9999 or raw <= _FILETIME_EPOCH.replace(tzinfo=raw.tzinfo):
            return None
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        return None


def _single(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _identity_from_attributes(distinguished_name: str, attrs: Dict[str, Any]) -> Identity:
    uac = _single(attrs.get("userAccountControl"))
    try:
        flags = int(uac) if uac not in (None, "") else NORMAL_ACCOUNT
    except (TypeError, ValueError):
        flags = NORMAL_ACCOUNT
    member_of = attrs.get("memberOf") or []
    if isinstance(member_of, str):
        member_of = [member_of]
    return Identity(
        username=str(_single(attrs.get("sAMAccountName")) or ""),
        distinguished_name=distinguished_name,
        principal_name=str(_single(attrs.get("userPrincipalName")) or ""),
        email=str(_single(attrs.get("mail")) or ""),
        display_name=str(_single(attrs.get("displayName")) or ""),
        enabled=not flags & ACCOUNTDISABLE,
        groups={str(group) for group in member_of if group},
        home_directory=_single(attrs.get("homeDirectory")) or None,
        expiration=_parse_expiration(_single(attrs.get("accountExpires"))),
        description=_single(attrs.get("description")) or None,
        department=_single(attrs.get("department")) or None,
        title=_single(attrs.get("title")) or None,
    )


def _group_matches(group: Dict[str, Any], identifier: str) -> bool:
    lowered = identifier.strip().lower()
    return lowered in {
        str(group.get("name") or "").lower(),
        str(group.get("distinguished_name") or "").lower(),
    }


class MockDirectory:
    """Lightweight directory emulator used when ldap3 connectivity isn't available."""

    def __init__(self, data_file: Optional[Path]):
        self.data_file = data_file
        self._data: Dict[str, Any] = {"users": [], "groups": []}
        self._load()

    def _load(self) -> None:
        if self.data_file and self.data_file.exists():
            with self.data_file.open("r", encoding="utf-8") as handle:
                self._data = yaml.safe_load(handle) or self._data
        self._data.setdefault("users", [])
        self._data.setdefault("groups", [])

    def _save(self) -> None:
        if not self.data_file:
            return
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        with self.data_file.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(self._data, handle, sort_keys=False, indent=2)

    def _user(self, distinguished_name: str) -> Optional[Dict[str, Any]]:
        lowered = distinguished_name.lower()
        return next(
            (
                user
                for user in self._data["users"]
                if str(user.get("distinguished_name") or "").lower() == lowered
            ),
            None,
        )

    def _require_user(self, distinguished_name: str) -> Dict[str, Any]:
        user = self._user(distinguished_name)
        if user is None:
            raise DirectoryError(f"No such object: {distinguished_name}")
        return user

    def _group(self, identifier: str) -> Optional[Dict[str, Any]]:
        return next((group for group in self._data["groups"] if _group_matches(group, identifier)), None)

    def find_user(self, **criteria: str) -> List[Dict[str, Any]]:
        """Return users where any of the given attributes matches case-insensitively."""

        wanted = {key: str(value).lower() for key, value in criteria.items() if value}
        results: List[Dict[str, Any]] = []
        for user in self._data["users"]:
            attrs = user.get("attributes", {})
            for key, value in wanted.items():
                actual = user.get("distinguished_name") if key == "distinguishedName" else attrs.get(key)
                if actual is not None and str(actual).lower() == value:
                    results.append(copy.deepcopy(user))
                    break
        return results

    def add_user(self, distinguished_name: str, attributes: Dict[str, Any]) -> None:
        username = str(attributes.get("sAMAccountName") or "")
        if self._user(distinguished_name) or self.find_user(sAMAccountName=username):
            raise ConflictError(username or distinguished_name)
        attrs = copy.deepcopy(attributes)
        attrs["memberOf"] = list(attributes.get("memberOf", []))
        self._data["users"].append({"distinguished_name": distinguished_name, "attributes": attrs})
        self._save()

    def modify(self, distinguished_name: str, changes: Dict[str, Any]) -> None:
        attrs = self._require_user(distinguished_name).setdefault("attributes", {})
        for key, value in changes.items():
            if value is None:
                attrs.pop(key, None)
            else:
                attrs[key] = value
        self._save()

    def get_user_groups(self, distinguished_name: str) -> List[str]:
        user = self._user(distinguished_name)
        if not user:
            return []
        return [str(value) for value in user.get("attributes", {}).get("memberOf", []) or []]

    def add_user_to_group(self, distinguished_name: str, group: str) -> str:
        record = self._group(group)
        if record is None:
            raise MembershipError(group, "group does not exist")
        attrs = self._require_user(distinguished_name).setdefault("attributes", {})
        members = [str(value) for value in attrs.get("memberOf", []) or []]
        group_dn = str(record.get("distinguished_name") or record.get("name"))
        if group_dn not in members:
            members.append(group_dn)
        attrs["memberOf"] = members
        self._save()
        return group_dn

    def remove_user_from_group(self, distinguished_name: str, group: str) -> None:
        record = self._group(group)
        if record is None:
            raise MembershipError(group, "group does not exist")
        if record.get("protected"):
            raise MembershipError(group, "insufficient access rights")
        attrs = self._require_user(distinguished_name).setdefault("attributes", {})
        group_dn = str(record.get("distinguished_name") or record.get("name")).lower()
        attrs["memberOf"] = [
            value for value in attrs.get("memberOf", []) or [] if str(value).lower() != group_dn
        ]
        self._save()

    def move_user(self, distinguished_name: str, new_dn: str) -> None:
        user = self._require_user(distinguished_name)
        if self._user(new_dn):
            raise DirectoryError(f"Entry already exists: {new_dn}")
        user["distinguished_name"] = new_dn
        self._save()


class ADClient(DirectoryClient):
    """Wrapper around ldap3 that exposes the account operations the workflows need."""

    def __init__(self, config: LDAPConfig):
        self.config = config
        self._mock_directory: Optional[MockDirectory] = None
        self.connection: Optional[Connection] = None

        if config.server_uri.startswith("mock://"):
            self._mock_directory = MockDirectory(config.mock_data_file)
        else:
            self.server = Server(config.server_uri, use_ssl=config.use_ssl, get_info=ALL)
            self.connection = Connection(
                self.server,
                user=config.user_dn,
                password=config.password,
                auto_bind=True,
            )

    def close(self) -> None:
        if self.connection and self.connection.bound:
            self.connection.unbind()

    def __enter__(self) -> "ADClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    # Lookup --------------------------------------------------------------
    def lookup(self, username: str) -> Optional[Identity]:
        cleaned = (username or "").strip()
        if not cleaned:
            return None
        if self._mock_directory:
            matches = self._mock_directory.find_user(sAMAccountName=cleaned)
            if not matches:
                return None
            return _identity_from_attributes(matches[0]["distinguished_name"], matches[0]["attributes"])

        escaped = escape_filter_chars(cleaned)
        return self._search_one(f"(&(objectClass=user)(sAMAccountName={escaped}))")

    def find_manager(self, identifier: str) -> Optional[Identity]:
        cleaned = (identifier or "").strip()
        if not cleaned:
            return None
        is_dn = "=" in cleaned and "," in cleaned

        if self._mock_directory:
            if is_dn:
                matches = self._mock_directory.find_user(distinguishedName=cleaned)
            else:
                matches = self._mock_directory.find_user(
                    sAMAccountName=cleaned, mail=cleaned, userPrincipalName=cleaned
                )
            if len(matches) != 1:
                return None
            return _identity_from_attributes(matches[0]["distinguished_name"], matches[0]["attributes"])

        if is_dn:
            self._search(
                f"look up {cleaned}",
                search_base=cleaned,
                search_filter="(objectClass=user)",
                search_scope=BASE,
                attributes=USER_ATTRIBUTES,
            )
            return self._single_entry()
        escaped = escape_filter_chars(cleaned)
        return self._search_one(
            "(&(objectClass=user)"
            f"(|(sAMAccountName={escaped})(mail={escaped})(userPrincipalName={escaped})))"
        )

    def get_groups(self, identity: Identity) -> List[str]:
        if self._mock_directory:
            return self._mock_directory.get_user_groups(identity.distinguished_name)

        base_dn = self.config.group_search_base or self.config.base_dn
        escaped_dn = escape_filter_chars(identity.distinguished_name)
        self._search(
            f"list groups of {identity.username}",
            search_base=base_dn,
            search_filter=f"(&(objectClass=group)(member={escaped_dn}))",
            search_scope=SUBTREE,
            attributes=["distinguishedName"],
            paged_size=500,
        )
        return [str(entry.entry_dn) for entry in self.connection.entries or []]

    # Provisioning --------------------------------------------------------
    def create(self, fields: Dict[str, Any]) -> Identity:
        fields = dict(fields)
        username = str(fields["sAMAccountName"])
        user_ou = str(fields.pop("ou", None) or self.config.user_ou)
        common_name = str(fields.pop("cn", None) or fields.get("displayName") or username)
        password = fields.pop("password", None)
        must_change = bool(fields.pop("must_change_password", True))
        distinguished_name = f"CN={escape_rdn(common_name)},{user_ou}"
        attributes = {key: value for key, value in fields.items() if value not in (None, "")}

        if self.lookup(username) is not None:
            raise ConflictError(username)

        if self._mock_directory:
            record = copy.deepcopy(attributes)
            record["userAccountControl"] = NORMAL_ACCOUNT if password else NORMAL_ACCOUNT | ACCOUNTDISABLE
            record["pwdLastSet"] = 0 if must_change else -1
            self._mock_directory.add_user(distinguished_name, record)
            logger.info("Created mock account %s (%s)", username, distinguished_name)
            return _identity_from_attributes(distinguished_name, record)

        assert self.connection is not None
        try:
            added = self.connection.add(
                dn=distinguished_name,
                object_class=["top", "person", "organizationalPerson", "user"],
                attributes={**attributes, "userAccountControl": NORMAL_ACCOUNT | ACCOUNTDISABLE},
            )
        except LDAPException as exc:
            raise IdentityCreationError(f"Unable to create {username}: {exc}") from exc
        if not added:
            result = self.connection.result or {}
            if result.get("description") == "entryAlreadyExists":
                raise ConflictError(username)
            raise IdentityCreationError(
                self._describe_failure("Active Directory rejected the user creation request")
            )

        if password:
            try:
                changed = self.connection.extend.microsoft.modify_password(distinguished_name, password)
                if not changed:
                    raise IdentityCreationError(
                        self._describe_failure(f"Unable to set the initial password for {username}")
                    )
                changes = {"userAccountControl": [(MODIFY_REPLACE, [NORMAL_ACCOUNT])]}
                if must_change:
                    changes["pwdLastSet"] = [(MODIFY_REPLACE, [0])]
                if not self.connection.modify(distinguished_name, changes):
                    raise IdentityCreationError(
                        self._describe_failure("Active Directory rejected the enable-account request")
                    )
            except LDAPException as exc:
                raise IdentityCreationError(f"Unable to activate {username}: {exc}") from exc

        identity = self.lookup(username)
        if identity is None:
            raise IdentityCreationError(f"Account {username} was created but cannot be read back.")
        return identity

    def disable(self, identity: Identity) -> None:
        if self._mock_directory:
            current = self._mock_directory.find_user(distinguishedName=identity.distinguished_name)
            flags = NORMAL_ACCOUNT
            if current:
                flags = int(current[0]["attributes"].get("userAccountControl") or NORMAL_ACCOUNT)
            self._mock_directory.modify(
                identity.distinguished_name, {"userAccountControl": flags | ACCOUNTDISABLE}
            )
        else:
            self._search(
                f"read account flags of {identity.username}",
                search_base=identity.distinguished_name,
                search_filter="(objectClass=user)",
                search_scope=BASE,
                attributes=["userAccountControl"],
            )
            flags = NORMAL_ACCOUNT
            if self.connection.entries:
                flags = int(self.connection.entries[0]["userAccountControl"].value or NORMAL_ACCOUNT)
            self._replace(identity, {"userAccountControl": flags | ACCOUNTDISABLE}, "disable account")
        identity.enabled = False

    def reset_credential(self, identity: Identity, secret: str, must_change: bool = False) -> None:
        if self._mock_directory:
            self._mock_directory.modify(identity.distinguished_name, {"pwdLastSet": 0 if must_change else -1})
            return

        assert self.connection is not None
        try:
            changed = self.connection.extend.microsoft.modify_password(identity.distinguished_name, secret)
        except LDAPException as exc:
            raise DirectoryError(f"Unable to reset password for {identity.username}: {exc}") from exc
        if not changed:
            raise DirectoryError(self._describe_failure(f"Unable to reset password for {identity.username}"))
        if must_change:
            self._replace(identity, {"pwdLastSet": 0}, "require password change")

    def add_to_group(self, identity: Identity, group: str) -> None:
        if self._mock_directory:
            group_dn = self._mock_directory.add_user_to_group(identity.distinguished_name, group)
        else:
            assert self.connection is not None
            group_dn = self._resolve_group_dn(group)
            try:
                added = self.connection.extend.microsoft.add_members_to_groups(
                    [identity.distinguished_name], [group_dn]
                )
            except LDAPException as exc:
                raise MembershipError(group, str(exc)) from exc
            if not added:
                raise MembershipError(group, self._describe_failure("add member failed"))
        identity.groups.add(group_dn)

    def remove_from_group(self, identity: Identity, group: str) -> None:
        if self._mock_directory:
            self._mock_directory.remove_user_from_group(identity.distinguished_name, group)
        else:
            assert self.connection is not None
            group_dn = self._resolve_group_dn(group)
            try:
                removed = self.connection.extend.microsoft.remove_members_from_groups(
                    [identity.distinguished_name], [group_dn]
                )
            except LDAPException as exc:
                raise MembershipError(group, str(exc)) from exc
            if not removed:
                raise MembershipError(group, self._describe_failure("remove member failed"))
        identity.groups.discard(group)

    def set_expiration(self, identity: Identity, expires_on: date) -> None:
        if self._mock_directory:
            self._mock_directory.modify(identity.distinguished_name, {"accountExpires": expires_on.isoformat()})
        else:
            self._replace(identity, {"accountExpires": to_filetime(expires_on)}, "set account expiration")
        identity.expiration = expires_on

    def move(self, identity: Identity, target_ou: str) -> None:
        relative_dn = identity.distinguished_name.split(",", 1)[0]
        new_dn = f"{relative_dn},{target_ou}"
        if new_dn.lower() == identity.distinguished_name.lower():
            return
        if self._mock_directory:
            self._mock_directory.move_user(identity.distinguished_name, new_dn)
        else:
            assert self.connection is not None
            try:
                moved = self.connection.modify_dn(
                    identity.distinguished_name, relative_dn, new_superior=target_ou
                )
            except LDAPException as exc:
                raise DirectoryError(f"Unable to move {identity.username}: {exc}") from exc
            if not moved:
                raise DirectoryError(self._describe_failure(f"Unable to move {identity.username}"))
        identity.distinguished_name = new_dn

    def set_description(self, identity: Identity, text: str) -> None:
        if self._mock_directory:
            self._mock_directory.modify(identity.distinguished_name, {"description": text})
        else:
            self._replace(identity, {"description": text}, "set description")
        identity.description = text

    def set_home_directory(self, identity: Identity, path: str, drive: str) -> None:
        changes = {"homeDirectory": path, "homeDrive": drive}
        if self._mock_directory:
            self._mock_directory.modify(identity.distinguished_name, changes)
        else:
            self._replace(identity, changes, "set home directory")
        identity.home_directory = path

    # Utilities -----------------------------------------------------------
    def _search(self, action: str, **kwargs: Any) -> None:
        assert self.connection is not None
        try:
            self.connection.search(**kwargs)
        except LDAPException as exc:
            raise DirectoryError(f"Unable to {action}: {exc}") from exc

    def _search_one(self, search_filter: str) -> Optional[Identity]:
        self._search(
            "search the directory",
            search_base=self.config.base_dn,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=USER_ATTRIBUTES,
            size_limit=2,
        )
        return self._single_entry()

    def _single_entry(self) -> Optional[Identity]:
        assert self.connection is not None
        entries = self.connection.entries or []
        if len(entries) != 1:
            if len(entries) > 1:
                logger.warning("Directory lookup matched %s entries; refusing to pick one.", len(entries))
            return None
        entry = entries[0]
        return _identity_from_attributes(str(entry.entry_dn), entry.entry_attributes_as_dict)

    def _replace(self, identity: Identity, values: Dict[str, Any], action: str) -> None:
        assert self.connection is not None
        changes = {key: [(MODIFY_REPLACE, [value])] for key, value in values.items()}
        try:
            modified = self.connection.modify(identity.distinguished_name, changes)
        except LDAPException as exc:
            raise DirectoryError(f"Unable to {action} for {identity.username}: {exc}") from exc
        if not modified:
            raise DirectoryError(self._describe_failure(f"Unable to {action} for {identity.username}"))

    def _resolve_group_dn(self, group: str) -> str:
        if "=" in group and "," in group:
            return group
        assert self.connection is not None
        escaped = escape_filter_chars(group)
        try:
            self.connection.search(
                search_base=self.config.group_search_base or self.config.base_dn,
                search_filter=f"(&(objectClass=group)(|(cn={escaped})(sAMAccountName={escaped})))",
                search_scope=SUBTREE,
                attributes=["distinguishedName"],
                size_limit=2,
            )
        except LDAPException as exc:
            raise MembershipError(group, f"group lookup failed: {exc}") from exc
        entries = self.connection.entries or []
        if len(entries) != 1:
            raise MembershipError(group, "group not found" if not entries else "group name is ambiguous")
        return str(entries[0].entry_dn)

    def _describe_failure(self, prefix: str) -> str:
        result = (self.connection.result if self.connection else None) or {}
        description = result.get("description", "Unknown error")
        message = result.get("message")
        return f"{prefix} ({description})." + (f" {message}" if message else "")


@contextlib.contextmanager
def ad_client(config: LDAPConfig) -> Iterator[ADClient]:
    client = ADClient(config)
    try:
        yield client
    finally:
        client.close()


__all__ = ["ADClient", "MockDirectory", "ad_client", "to_filetime"]
