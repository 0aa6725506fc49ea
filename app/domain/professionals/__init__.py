"""Professionals Domain - Directory of bookable professionals"""
