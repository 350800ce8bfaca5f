"""pgrelocate configuration"""
