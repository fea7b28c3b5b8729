"""Test the repogate module."""

import asyncio

from repogate.models import RepoId

REPO = RepoId(owner="acme", name="widgets")
API_KEY = "test-actions-key"

SEED_FILES = {
    "README.md": b"# widgets\n",
    "src/app.py": b"print('hello')\n",
    "src/util.py": b"VALUE = 1\n",
}


class RecordingStore:
    """Wrap a store, recording calls and injecting failures, delays or hooks.

    - ``failures[operation] = (call_index, exception)`` raises on that call
    - ``delays[operation] = seconds`` sleeps before every call
    - ``hooks[operation] = coroutine function`` runs before every call
    """

    def __init__(self, store):
        self.store = store
        self.calls = []
        self.failures = {}
        self.delays = {}
        self.hooks = {}

    def __getattr__(self, name):
        target = getattr(self.store, name)
        if name.startswith("_") or not asyncio.iscoroutinefunction(target):
            return target

        async def call(*args, **kwargs):
            index = self.calls.count(name)
            self.calls.append(name)
            if name in self.hooks:
                await self.hooks[name]()
            if name in self.delays:
                await asyncio.sleep(self.delays[name])
            failure = self.failures.get(name)
            if failure and failure[0] == index:
                raise failure[1]
            return await target(*args, **kwargs)

        return call
