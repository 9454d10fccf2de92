"""
Código compartilhado entre o Store e o cliente: modelos, erros, logging,
métricas e utilidades.
"""
