#!/usr/bin/env python3
"""Cloudinary credential setup script.

Validates Cloudinary credentials with a one-item search call and offers to
store them, plus the webhook signing secret, in the system keychain.

Usage:
    python -m scripts.setup_cloudinary
"""

import getpass
import sys

from integrations.cloudinary_client import CloudinaryClient
from integrations.exceptions import AssetStoreAuthError, AssetStoreError


def validate_credentials(cloud_name: str, api_key: str, api_secret: str) -> int:
    """Validate credentials by listing one resource.

    Returns:
        Number of resources returned by the validation call (0 or 1).

    Raises:
        AssetStoreError: If the credentials are rejected or the API is unreachable.
    """
    client = CloudinaryClient(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret)
    page = client.list_page(page_size=1)
    return len(page.assets)


def _offer_keychain_store(credentials: dict[str, str]) -> None:
    """Prompt the user to store credentials in the keychain."""
    from services.credential_manager import set_credential

    answer = input("\nStore these credentials in the system keychain? [Y/n] ").strip().lower()
    if answer in ("", "y", "yes"):
        for key, value in credentials.items():
            if not value:
                continue
            if set_credential(key, value):
                print(f"  Stored {key} in keychain")
            else:
                print(f"  Failed to store {key}")
    else:
        print("  Skipped keychain storage. Add these to your .env instead:")
        for key, value in credentials.items():
            if value:
                print(f"  {key}={value}")


def main():
    """Prompt for credentials and validate them."""
    print("Cloudinary Setup")
    print("=" * 40)
    cloud_name = input("Cloud name: ").strip()
    api_key = input("API key: ").strip()
    api_secret = getpass.getpass("API secret: ").strip()
    webhook_secret = getpass.getpass(
        "Webhook signing secret (blank to reuse the API secret): "
    ).strip()

    if not (cloud_name and api_key and api_secret):
        print("Error: cloud name, API key and API secret are all required.")
        sys.exit(1)

    print("\nValidating credentials...")
    try:
        validate_credentials(cloud_name, api_key, api_secret)
    except AssetStoreAuthError:
        print("Error: Cloudinary rejected these credentials.")
        sys.exit(1)
    except AssetStoreError as e:
        print(f"Error: could not reach Cloudinary: {e}")
        sys.exit(1)
    print("Credentials are valid.")

    _offer_keychain_store(
        {
            "CLOUDINARY_CLOUD_NAME": cloud_name,
            "CLOUDINARY_API_KEY": api_key,
            "CLOUDINARY_API_SECRET": api_secret,
            "WEBHOOK_SIGNING_SECRET": webhook_secret or api_secret,
        }
    )


if __name__ == "__main__":
    main()
