from __future__ import annotations

import getpass
import logging
import socket
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from http.client import HTTPException

from .sink import http_client

logger = logging.getLogger(__name__)

IP_NOT_FOUND = "IP address not found"


@dataclass
class UserIdentity:
    user_name: str
    computer_name: str
    git_username: str
    ip_address: str
    user_id: str | None = None

    def registration_payload(self) -> dict[str, str]:
        return {
            "userName": self.user_name,
            "computerName": self.computer_name,
            "gitUsername": self.git_username,
            "ipAddress": self.ip_address,
        }


def run_command(cmd: Sequence[str], cwd: str | None = None) -> str:
    try:
        out = subprocess.check_output(cmd, cwd=cwd, stderr=subprocess.DEVNULL, text=True)
        return out.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return ""


def git_username() -> str:
    return run_command(["git", "config", "user.name"])


def ip_address() -> str:
    # Connecting a UDP socket sends nothing; it only selects the outbound interface.
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("192.0.2.1", 80))
            address = sock.getsockname()[0]
    except OSError:
        address = ""
    if address and not address.startswith("127."):
        return address
    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            candidate = str(info[4][0])
            if not candidate.startswith("127."):
                return candidate
    except OSError:
        pass
    return IP_NOT_FOUND


def collect_identity() -> UserIdentity:
    try:
        user_name = getpass.getuser()
    except Exception:
        user_name = ""
    return UserIdentity(
        user_name=user_name,
        computer_name=socket.gethostname(),
        git_username=git_username(),
        ip_address=ip_address(),
    )


def register_identity(
    identity: UserIdentity, register_url: str | None, *, timeout_s: float = 10.0
) -> UserIdentity:
    """Register ``identity`` once; failures leave ``user_id`` unset."""
    if identity.user_id or not register_url:
        return identity
    try:
        status, payload = http_client.request_json(
            "POST",
            register_url,
            body=identity.registration_payload(),
            timeout_s=timeout_s,
        )
    except (OSError, HTTPException, ValueError) as exc:
        logger.warning("user registration failed: %s", exc)
        return identity
    if status == 200 and isinstance(payload, dict):
        user_id = payload.get("UserID") or payload.get("userId")
        if user_id is not None:
            identity.user_id = str(user_id)
    else:
        logger.warning("user registration rejected (%s)", status)
    return identity
