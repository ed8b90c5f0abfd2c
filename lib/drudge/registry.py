import threading
import types


class Registry:
    """Unique name -> value store. Entries can be added but never replaced or removed.

    """

    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()

    def register(self, name: str, factory):
        """Call factory() & store the result under name, iff name isn't taken.

        Nb. on collision the factory is *not* called.

        :param name:
        :param factory: no arg callable returning the value to store
        :return: the new value, or None if name is already registered

        """
        with self._lock:
            if name in self._entries:
                return None

            entry = factory()
            self._entries[name] = entry
            return entry

    def get(self, name: str):
        """Return value registered under name, or None.

        :param name:

        """
        return self._entries.get(name)

    def all(self) -> types.MappingProxyType:
        """Return a read only snapshot of everything registered.

        :return: MappingProxyType

        """
        with self._lock:
            return types.MappingProxyType(dict(self._entries))

    def all_names(self) -> list:
        """

        :return: list

        """
        with self._lock:
            return list(self._entries.keys())

    def values(self) -> list:
        """

        :return: list

        """
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, name) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)
