"""FixIT helpdesk API service"""
