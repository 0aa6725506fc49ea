"""
Payments Domain

MercadoPago and PayPal checkout, and the callbacks that confirm appointments.
"""
