# config package - authoritative source for client configuration.
#
# Sub-modules:
#   service_config.py  - evaluation API URL, timeouts, endpoint defaults,
#                        persistence location, logging switches
#
# Overrides are read from the environment or a .env file in the project root.
