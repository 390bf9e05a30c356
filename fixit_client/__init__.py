"""FixIT helpdesk client: REST access and live notifications"""
