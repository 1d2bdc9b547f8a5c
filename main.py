from apiboot import serve
from apiboot.config import StartupOptions

if __name__ == "__main__":
    serve(StartupOptions())
