"""Game Server Lifecycle (gsl).

Single-host manager for containerized game servers:
 - create containers with port, memory and volume configuration
 - provision server files with one-off install containers
 - start / stop / reinstall with status reconciled against Docker
 - live log streaming that survives daemon hiccups
"""
