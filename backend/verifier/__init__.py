"""
Identity verification engine.
Confirms claimed memberships by reading the member directory and the public
vendor listing in a headless browser and matching the claimed identity.
"""
