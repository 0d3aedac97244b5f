# scripts/mint_token.py
import argparse  # parse CLI args
import os  # read environment variables

from rodeo_gate.security import mint_identity_token  # same HS256 format the API verifies


def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Mint a dev bearer token for the gate API")
    parser.add_argument("--sub", required=True)  # identity, e.g. user_1 or kiosk_front
    parser.add_argument("--role", action="append", default=[])  # repeatable: kiosk, admin
    parser.add_argument("--ttl-minutes", type=int, default=60)  # token lifetime
    args = parser.parse_args()  # parse args

    secret = os.environ.get("AUTH_JWT_SECRET", "dev_secret_change_me")  # signing secret
    print(mint_identity_token(args.sub, args.role, secret, ttl_minutes=args.ttl_minutes))  # token to stdout


if __name__ == "__main__":  # run as script
    main()  # call main
