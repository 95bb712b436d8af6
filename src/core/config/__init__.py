"""
Configuration subsystem for Questline.

Static vs Dynamic Configuration
--------------------------------
**Static (Config):**
- Loaded from environment variables at startup
- Includes: database URL, pool sizes, environment, logging
- Changes require a restart

**Dynamic (ConfigManager):**
- Loaded from YAML files under ``config/``
- Includes: XP curve, tier table, quest catalog, reset windows, view limits
- In-memory overrides via ``ConfigManager.set``

Usage
-----
```python
from src.core.config import Config, ConfigManager

db_url = Config.DATABASE_URL
growth = ConfigManager.get("progression.curve.growth", 1.15)
```
"""

from src.core.config.config import Config, Environment
from src.core.config.manager import ConfigManager

__all__ = [
    "Config",
    "Environment",
    "ConfigManager",
]
