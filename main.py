import argparse
import asyncio
import sys
from pathlib import Path

from pydantic import ValidationError

import services.error
import services.logger as log
import services.util as u
import services.config_io as config_io
from services.config_schema import AppConfig
from services.db import SqliteStore
from services.initializer import initialize
from drivers.registry import load_all

l = log.get_logger()


def cmd_convert(src: str, dst: str) -> None:
    src_path = Path(src)
    dst_path = Path(dst)

    if not src_path.is_file():
        print(f"Error: source file not found: {src_path}", file=sys.stderr)
        sys.exit(1)

    try:
        data = config_io.load_config(src_path)
    except Exception as e:
        print(f"Error reading {src_path}: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        config_io.save_config(data, dst_path)
    except Exception as e:
        print(f"Error writing {dst_path}: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Converted {src_path} → {dst_path}")


def seed_store(store: SqliteStore, cfg: AppConfig, registry: dict) -> bool:
    """Validate each platform block and replace the stored settings, bridges and masquerades."""
    config_ok = True
    for platform, (config_cls, _) in registry.items():
        options = cfg.platform_options(platform)
        if not options:
            continue
        try:
            config_cls.model_validate(options)
        except ValidationError as exc:
            l.critical(f"Config error in {platform}:\n{exc}")
            config_ok = False
            continue
        store.save_settings(platform, options)

    if not config_ok:
        return False

    # The config file is authoritative; rows it no longer lists are removed.
    store.replace_bridges(
        [b.to_model() for b in cfg.bridges],
        [m.to_model() for m in cfg.masquerades],
    )

    l.info(f"Loaded {len(cfg.bridges)} bridge(s) and {len(cfg.masquerades)} masquerade(s)")
    return True


async def main():
    registry = load_all()

    l.info("Bridge starting…")

    data_path = Path(u.get_data_path())
    config_path = config_io.find_config(data_path)
    if config_path is None:
        l.critical(f"No config file found in: {data_path} (tried config.json / .yaml / .toml)")
        return

    l.info(f"Loading config from: {config_path}")
    try:
        cfg = AppConfig.model_validate(config_io.load_config(config_path))
    except ValidationError as exc:
        l.critical(f"Config error:\n{exc}")
        return

    store = SqliteStore(data_path / cfg.database)
    if not seed_store(store, cfg, registry):
        return

    relay = await initialize(store, registry)
    if relay is None:
        l.error("Bridge not started; see the log records above")
        return

    try:
        await relay.run()
    except asyncio.CancelledError:
        l.info("Bridge shutting down…")
    finally:
        store.close()
        l.info("Bridge stopped.")


if __name__ == "__main__":
    services.error.install_excepthook()

    parser = argparse.ArgumentParser(prog="bridge", description="Discord ⇄ Revolt chat bridge")
    subparsers = parser.add_subparsers(dest="command")

    conv = subparsers.add_parser("convert", help="Convert a config file between formats (json/yaml/toml)")
    conv.add_argument("src", help="Source config file (e.g. config.json)")
    conv.add_argument("dst", help="Destination config file (e.g. config.yaml)")

    args = parser.parse_args()

    if args.command == "convert":
        cmd_convert(args.src, args.dst)
        sys.exit(0)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
