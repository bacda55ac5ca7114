"""Schema definitions for connection settings and setup lists."""

from typing import Optional
from pydantic import BaseModel, Field, validator


# Written into template settings files. Existing files still carry this exact
# text, so it has to be recognised verbatim as "no fingerprint configured".
HOST_KEY_FINGERPRINT_PLACEHOLDER = (
    "Put your the host key fingerprint here or leave this empty (except any key - unsecure)"
)


class SyncSettings(BaseModel):
    """Configuration for a single local-to-remote connection."""

    host_name: str = Field(..., alias="hostName", description="Remote SSH host")
    user_name: str = Field(..., alias="userName", description="Remote SSH user")
    remote_path: str = Field(..., alias="remotePath", description="Remote directory to mirror into")
    local_path: str = Field(..., alias="localPath", description="Local directory to watch")
    file_mask: str = Field(default="", alias="fileMask", description="Include/exclude mask passed to the transfer")
    ssh_host_key_fingerprint: str = Field(default="", alias="sshHostKeyFingerprint")

    class Config:
        frozen = True
        populate_by_name = True

    @validator('host_name', 'user_name', 'remote_path', 'local_path')
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @validator('file_mask', 'ssh_host_key_fingerprint', pre=True)
    def validate_optional_text(cls, v):
        return v or ""

    @property
    def accept_any_host_key(self) -> bool:
        """True when no fingerprint is configured and any host key is trusted."""
        return not self.ssh_host_key_fingerprint

    @property
    def label(self) -> str:
        return f"{self.host_name}:{self.remote_path}"


class ConnectionEntry(BaseModel):
    """One row of a multi-connection setup list."""

    path: str = Field(..., description="Directory holding the connection's settings file")
    is_enabled: bool = Field(default=True, alias="isEnabled")
    run_on_startup: bool = Field(default=True, alias="runOnStartup")
    log_file_path: Optional[str] = Field(default=None, alias="logFilePath")

    class Config:
        populate_by_name = True

    @validator('path')
    def validate_path(cls, v):
        if not v or not v.strip():
            raise ValueError("Connection path must not be empty")
        return v


def template_settings() -> SyncSettings:
    """Settings written by ``syncwatch --create``."""
    return SyncSettings(
        host_name="example.com",
        user_name="root",
        remote_path="/var/www/site",
        local_path=".",
        file_mask="|.git/;node_modules/;*.tmp",
        ssh_host_key_fingerprint=HOST_KEY_FINGERPRINT_PLACEHOLDER,
    )
