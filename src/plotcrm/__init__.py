"""plotcrm: customer records for a memorial and burial-plot business.

This package keeps the customer search index aligned with the Firestore
document store and evaluates saved search lists against indexed customers.
"""
