import asyncio

import services.logger as log
from services.bridge import BridgeRouter, collect_sensitive
from services.db import Store
from services.error import ConfigurationMissing
from services.logger import EventLog

# Platform A and platform B, in that order.
PLATFORMS = ("discord", "revolt")


class Relay:
    """The two live adapters plus the router wired between them."""

    def __init__(self, adapters: dict, router: BridgeRouter, events: EventLog):
        self.adapters = adapters
        self.router = router
        self._events = events

    async def run(self):
        """Run both adapters until they stop; one crashing leaves the other up."""
        tasks = [
            asyncio.create_task(adapter.start(), name=name)
            for name, adapter in self.adapters.items()
        ]
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for task, result in zip(tasks, results):
                if isinstance(result, Exception):
                    self._events.error(f"Adapter '{task.get_name()}' exited with error", error=str(result))
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            await self.close()

    async def close(self):
        for adapter in self.adapters.values():
            try:
                await adapter.close()
            except Exception as e:
                self._events.warn(f"Error while closing {adapter.label}", error=str(e))


async def initialize(store: Store, registry: dict | None = None) -> Relay | None:
    """
    Build the relay from the store's settings.

    Returns ``None`` when a bot token is missing or anything goes wrong; the
    failure is recorded in the log sink and never raised, so the process
    stays up without bridging.
    """
    events = EventLog(store)
    try:
        if registry is None:
            from drivers.registry import load_all
            registry = load_all()

        settings = store.get_settings()
        events.info(
            "Attempting to initialize bridge with settings",
            discordTokenPresent=bool(settings.token("discord")),
            revoltTokenPresent=bool(settings.token("revolt")),
        )

        missing = [p for p in PLATFORMS if not settings.token(p)]
        if missing:
            err = ConfigurationMissing(f"Bot tokens not configured: {', '.join(missing)}")
            events.error(
                str(err),
                discordTokenSet=bool(settings.token("discord")),
                revoltTokenSet=bool(settings.token("revolt")),
            )
            return None

        sensitive = collect_sensitive(settings)
        log.register_sensitive(sensitive)

        adapters = {}
        for platform in PLATFORMS:
            config_cls, driver_cls = registry[platform]
            config = config_cls.model_validate(settings.options(platform))
            adapters[platform] = driver_cls(config, events)

        router = BridgeRouter(store, events, sensitive)
        a, b = (adapters[p] for p in PLATFORMS)
        router.attach(a, b)
        router.attach(b, a)

        try:
            store.clear_error_logs()
        except Exception as e:
            events.warn("Failed to clear error logs", error=str(e))

        events.info("Bridge initialized successfully")
        return Relay(adapters, router, events)
    except Exception as e:
        events.error("Failed to initialize bridge", error=str(e))
        return None
