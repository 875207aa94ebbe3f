# HTTP plumbing: cookies, dependencies, shared services
