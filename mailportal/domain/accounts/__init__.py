"""SMTP account domain - relay account registry, presets and endpoints"""
