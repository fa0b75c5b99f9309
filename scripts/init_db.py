import argparse

from billing_api.db.engine import get_engine
from billing_api.db.schema import metadata


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create the billing tables.")
    parser.add_argument("--reset", action="store_true", help="drop existing tables first (destroys data)")
    args = parser.parse_args(argv)

    engine = get_engine()
    if args.reset:
        metadata.drop_all(engine)
    metadata.create_all(engine)
    print("DB schema created.")

if __name__ == "__main__":
    main()
