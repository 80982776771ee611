"""Роли и правила доступа к рабочему пространству.

Проверка ``can_perform`` чистая: она работает только со снимком строк
workspace/collaborators и может вызываться до любой записи.
"""
import uuid
from enum import Enum
from typing import Dict, Optional, Union


class Role(str, Enum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]


ROLE_RANK = {
    Role.VIEWER: 1,
    Role.EDITOR: 2,
    Role.OWNER: 3,
}


class Action(str, Enum):
    READ_FILES = "read_files"
    READ_MESSAGES = "read_messages"
    READ_COLLABORATORS = "read_collaborators"
    READ_VERSIONS = "read_versions"
    CREATE_FILE = "create_file"
    UPDATE_FILE = "update_file"
    DELETE_FILE = "delete_file"
    CREATE_VERSION = "create_version"
    SEND_MESSAGE = "send_message"
    MANAGE_COLLABORATORS = "manage_collaborators"
    INVITE_MEMBERS = "invite_members"
    RESTORE_VERSION = "restore_version"
    CLEAR_CHAT_HISTORY = "clear_chat_history"
    CLEAR_VERSION_HISTORY = "clear_version_history"
    DELETE_WORKSPACE = "delete_workspace"


REQUIRED_ROLE = {
    Action.READ_FILES: Role.VIEWER,
    Action.READ_MESSAGES: Role.VIEWER,
    Action.READ_COLLABORATORS: Role.VIEWER,
    Action.READ_VERSIONS: Role.VIEWER,
    Action.CREATE_FILE: Role.EDITOR,
    Action.UPDATE_FILE: Role.EDITOR,
    Action.DELETE_FILE: Role.EDITOR,
    Action.CREATE_VERSION: Role.EDITOR,
    Action.SEND_MESSAGE: Role.EDITOR,
    Action.MANAGE_COLLABORATORS: Role.OWNER,
    Action.INVITE_MEMBERS: Role.OWNER,
    Action.RESTORE_VERSION: Role.OWNER,
    Action.CLEAR_CHAT_HISTORY: Role.OWNER,
    Action.CLEAR_VERSION_HISTORY: Role.OWNER,
    Action.DELETE_WORKSPACE: Role.OWNER,
}

# Доступны только workspace.owner_id, роль owner у соавтора не достаточна
WORKSPACE_OWNER_ACTIONS = frozenset({Action.DELETE_WORKSPACE})


class AccessSnapshot:
    """Снимок владельца и ролей соавторов одного пространства"""

    def __init__(
        self,
        workspace_id: uuid.UUID,
        owner_id: uuid.UUID,
        roles: Optional[Dict[uuid.UUID, Role]] = None
    ):
        self.workspace_id = workspace_id
        self.owner_id = owner_id
        self.roles = dict(roles or {})

    def role_of(self, user_id: Optional[uuid.UUID]) -> Optional[Role]:
        # Владелец всегда owner, даже если строка соавтора потеряна
        if user_id is not None and user_id == self.owner_id:
            return Role.OWNER
        return self.roles.get(user_id)

    def is_visible_to(self, user_id: Optional[uuid.UUID]) -> bool:
        return self.role_of(user_id) is not None

    def __repr__(self) -> str:
        return f"AccessSnapshot(workspace_id={self.workspace_id}, members={len(self.roles)})"


def can_perform(
    snapshot: Optional[AccessSnapshot],
    actor_id: Optional[uuid.UUID],
    action: Union[Action, str]
) -> bool:
    if snapshot is None or actor_id is None:
        return False

    try:
        action = Action(action)
    except ValueError:
        return False

    if action in WORKSPACE_OWNER_ACTIONS:
        return actor_id == snapshot.owner_id

    role = snapshot.role_of(actor_id)
    if role is None:
        return False
    return role.rank >= REQUIRED_ROLE[action].rank
