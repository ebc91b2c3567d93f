"""
Lists the social accounts connected to the configured Late.dev profile.
"""

import sys

import httpx

from config import Settings


def main() -> int:
    settings = Settings.from_env()
    if not settings.late_api_key:
        print("LATE_API_KEY no está definido.")
        return 1

    headers = {"Authorization": f"Bearer {settings.late_api_key}"}
    with httpx.Client(timeout=15.0) as client:
        resp = client.get(f"{settings.late_base_url}/accounts", headers=headers)
        resp.raise_for_status()
        accounts = resp.json().get("accounts") or []

    if not accounts:
        print("No hay cuentas conectadas.")
        return 0
    for account in accounts:
        print(f"{account.get('platform', '?'):<16} {account.get('username') or '-':<30} {account.get('_id')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
