import enum


class Priority(str, enum.Enum):
    NONE = ""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuthEventType(str, enum.Enum):
    REGISTER_SUCCESS = "register_success"
    REGISTER_FAILED = "register_failed"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGIN_BLOCKED = "login_blocked"
    LOGOUT = "logout"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_CHANGE_FAILED = "password_change_failed"


class LiveEvent(str, enum.Enum):
    CONNECTED = "connected"
    ACTIVE_USERS = "active_users"
    BOARD_UPDATED = "board_updated"
    PONG = "pong"
