import uvicorn


def main() -> None:
    uvicorn.run("tripdesk_api.app:create_app", factory=True, reload=True)


if __name__ == "__main__":
    main()
