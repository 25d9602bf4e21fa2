#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
QEMU guest agent client used to read a running VM's IPv4 address.
"""
import json
import logging
import socket
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from wbvm.models import GuestInterface

logger = logging.getLogger("wb")

_INTERFACES = TypeAdapter(List[GuestInterface])


class GuestAgentClient:
    """Newline-delimited JSON over the guest agent's UNIX socket."""

    def __init__(self, timeout: float = 0.5):
        self.timeout = timeout

    def execute(self, socket_path: Path, command: str) -> Optional[Dict[str, Any]]:
        """Send one command; None when the agent is unreachable or silent within the timeout.

        The timeout bounds the whole exchange, not each read.
        """
        deadline = time.monotonic() + self.timeout
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(self.timeout)
            try:
                sock.connect(str(socket_path))
                sock.sendall((json.dumps({"execute": command}) + "\n").encode("utf-8"))
                buf = b""
                while not buf.endswith(b"\n"):
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise socket.timeout("guest agent reply incomplete")
                    sock.settimeout(remaining)
                    chunk = sock.recv(4096)
                    if not chunk:
                        raise ConnectionError("guest agent closed the connection")
                    buf += chunk
            except (OSError, socket.timeout) as e:
                logger.debug("Guest agent %s did not answer %s: %s", socket_path, command, e)
                return None
        try:
            reply = json.loads(buf.split(b"\n", 1)[0].decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug("Invalid reply from guest agent %s: %s", socket_path, e)
            return None
        return reply if isinstance(reply, dict) else None

    def ipv4_address(self, socket_path: Path) -> Optional[str]:
        """First IPv4 address on a non-loopback interface, if the agent reports one."""
        reply = self.execute(socket_path, "guest-network-get-interfaces")
        if not reply or "return" not in reply:
            return None
        try:
            interfaces = _INTERFACES.validate_python(reply["return"])
        except ValidationError as e:
            logger.debug("Unexpected interface list from %s: %s", socket_path, e)
            return None
        for interface in interfaces:
            if interface.name == "lo":
                continue
            for address in interface.ip_addresses:
                if address.ip_address_type == "ipv4":
                    return address.ip_address
        return None
