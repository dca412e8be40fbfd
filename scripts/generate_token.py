"""
CLI utility to generate a shared secret for gateway token auth.

The gateway compares the Bearer value of every request against
gateway.auth.token (or gateway.auth.password in password mode). This script
mints a random URL-safe secret and prints the config snippet and a curl
example that uses it.

Usage examples:

    # 32 random bytes, token mode
    python -m scripts.generate_token

    # Longer secret, printed as a password-mode snippet
    python -m scripts.generate_token --bytes 48 --mode password

The secret can also be supplied through the environment instead of the
config file:

    export GATEWAY_TOKEN=<token>
"""

import argparse
import json
import secrets


def generate_token(num_bytes: int = 32) -> str:
    """
    Generate a random URL-safe secret.

    Args:
        num_bytes: Bytes of randomness (the encoded string is ~1.3x longer)

    Returns:
        The encoded secret
    """
    return secrets.token_urlsafe(num_bytes)


def config_snippet(token: str, mode: str = "token") -> dict:
    """Return the `gateway` section that enables `mode` with `token`."""
    return {"gateway": {"auth": {"mode": mode, mode: token}}}


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate a shared secret for the tool gateway.",
    )
    parser.add_argument(
        "--bytes",
        type=int,
        default=32,
        help="Bytes of randomness in the secret (default: 32)",
    )
    parser.add_argument(
        "--mode",
        choices=["token", "password"],
        default="token",
        help="Auth mode the snippet configures (default: token)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=18789,
        help="Gateway port used in the curl example (default: 18789)",
    )

    args = parser.parse_args()
    token = generate_token(args.bytes)

    print(f"Mode:   {args.mode}")
    print(f"Token:  {token}")
    print()
    print("Config snippet (merge into gateway.json):")
    print(json.dumps(config_snippet(token, args.mode), indent=2))
    print()
    print("Usage with curl:")
    print(f"  curl -X POST http://127.0.0.1:{args.port}/tools/invoke \\")
    print('    -H "Content-Type: application/json" \\')
    print(f'    -H "Authorization: Bearer {token}" \\')
    print('    -d \'{"tool":"sessions_list","args":{},"sessionKey":"main"}\'')


if __name__ == "__main__":
    main()
