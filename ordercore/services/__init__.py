"""Order engine services: pricing, inventory, status and order orchestration."""
