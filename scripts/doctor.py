"""Environment preflight checks before starting the gateway."""

from __future__ import annotations

import os
import socket
import sys
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from src.config import Settings

MIN_PYTHON = (3, 9)

DEVICE_CONNECT_TIMEOUT = 2.0


@dataclass
class DoctorResult:
    ok: bool
    messages: List[str]


def _python_version_tuple() -> Tuple[int, int, int]:
    v = sys.version_info
    return (v.major, v.minor, v.micro)


def _check_python_version(errors: List[str]) -> None:
    current = _python_version_tuple()
    if current[:2] < MIN_PYTHON:
        errors.append(
            f"Python {current[0]}.{current[1]} is unsupported. "
            f"Use Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]} or newer."
        )


def _load_settings(env: Mapping[str, str], errors: List[str]) -> Optional[Settings]:
    try:
        settings = Settings.from_env(env)
    except ValueError as exc:
        errors.append(str(exc))
        return None

    try:
        settings.validate()
    except RuntimeError as exc:
        errors.append(str(exc))

    return settings


def _check_port_binding(settings: Settings, errors: List[str]) -> None:
    if not (0 < settings.port < 65536):
        errors.append(f"PORT must be between 1 and 65535, got `{settings.port}`.")
        return

    bind_host = "127.0.0.1" if settings.host in {"0.0.0.0", "localhost", ""} else settings.host
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((bind_host, settings.port))
    except OSError as exc:
        errors.append(
            f"PORT/HOST conflict: cannot bind {bind_host}:{settings.port} ({exc}). "
            "Pick a free port, e.g. `PORT=8090`."
        )
    finally:
        sock.close()


def _check_device(settings: Settings, warnings: List[str]) -> None:
    # Stubs never talk to the phone
    if settings.use_stub_adapters:
        return

    address = (settings.android_host, settings.android_port)
    try:
        with socket.create_connection(address, timeout=DEVICE_CONNECT_TIMEOUT):
            pass
    except OSError as exc:
        warnings.append(
            f"Local device not reachable at {address[0]}:{address[1]} ({exc}). "
            "Local attempts will fail until it is; check ANDROID_HOST / ANDROID_PORT "
            "and that the bridge app is running."
        )


def run_doctor(env: Optional[Mapping[str, str]] = None) -> DoctorResult:
    env_map: Mapping[str, str] = os.environ if env is None else env
    errors: List[str] = []
    warnings: List[str] = []

    _check_python_version(errors)
    settings = _load_settings(env_map, errors)
    if settings is not None:
        _check_port_binding(settings, errors)
        _check_device(settings, warnings)

    messages: List[str] = []
    if errors:
        messages.append("Doctor found configuration issues:")
        for i, msg in enumerate(errors, 1):
            messages.append(f"{i}. {msg}")
        messages.append("Fix the items above and rerun `python -m scripts.doctor`.")
    else:
        messages.append("Doctor checks passed.")

    if warnings:
        messages.append("Warnings:")
        for i, msg in enumerate(warnings, 1):
            messages.append(f"- {msg}")

    return DoctorResult(ok=not errors, messages=messages)


def main() -> int:
    result = run_doctor()
    print("\n".join(result.messages))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
