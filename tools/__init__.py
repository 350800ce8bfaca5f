"""pgrelocate command line tools"""
