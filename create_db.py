from healthpass.core.database import engine
from healthpass.core.logging import configure_logging
from healthpass.models.passport import create_tables, metadata


def main():
    configure_logging()
    create_tables(engine)
    print(f"Created tables at {engine.url}:", list(metadata.tables.keys()))


if __name__ == '__main__':
    main()
