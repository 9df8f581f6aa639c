"""
Organization requests: tenants ask to join or leave a chain, admins quote a
cost and approve or reject.
"""
