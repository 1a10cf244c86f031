"""Element helpers: Q4 shape functions, quadrature and Kelvin B-matrices."""
