from audit.logger import logger

API_KEYS_KEY = "api_keys"


class ApiKeyRegistry:
    """Valid API keys, held as a set under the `api_keys` key."""

    def __init__(self, data_store, default_keys=None):
        self.data_store = data_store
        self.default_keys = list(default_keys or [])

    def seed_defaults(self):
        if self.data_store.members(API_KEYS_KEY):
            return False

        for key in self.default_keys:
            self.data_store.add_to_set(API_KEYS_KEY, key)

        logger.info(f"Default API keys initialized | count={len(self.default_keys)}")
        return True

    def is_valid(self, api_key):
        if not api_key:
            return False
        # Memory tier only: a missing registry gets the defaults, an emptied one stays empty
        if not self.data_store.connected and not self.data_store.exists(API_KEYS_KEY):
            self.seed_defaults()
        return self.data_store.is_member(API_KEYS_KEY, api_key)

    def add(self, api_key):
        return self.data_store.add_to_set(API_KEYS_KEY, api_key)

    def remove(self, api_key):
        return self.data_store.remove_from_set(API_KEYS_KEY, api_key)

    def all(self):
        return sorted(self.data_store.members(API_KEYS_KEY))
