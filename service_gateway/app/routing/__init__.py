"""
Handler routing: the request/response contract and the static route table.
"""
