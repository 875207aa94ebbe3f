# HTTP API routers
