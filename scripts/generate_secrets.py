"""
Secret Generator

Prints a random JWT_SECRET suitable for the .env file.
Run from project root: python scripts/generate_secrets.py

Author: Khalil Bannouri
Version: 1.0.0
"""

import secrets


def generate_jwt_secret(length: int = 64) -> str:
    return secrets.token_urlsafe(length)


if __name__ == "__main__":
    print("# Add to your .env file")
    print(f"JWT_SECRET={generate_jwt_secret()}")
