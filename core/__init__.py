"""
pgrelocate core: catalog introspection, DDL synthesis and data transfer
"""
