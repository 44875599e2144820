"""
LUCID Asset Agent — on-device asset reconciliation for LUCID.

Receives the desired asset set from the hub over MQTT, deploys and removes
files and AI models until the device matches it, and reports per-asset state
back to the hub.
"""
